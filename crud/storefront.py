from typing import Optional
from sqlalchemy.orm import Session
import models
import schemas

def get_storefront_by_name(db: Session, name: str) -> Optional[models.Storefront]:
    return db.query(models.Storefront).filter(models.Storefront.name == name).first()

def register_storefront(db: Session, storefront: schemas.StorefrontCreate) -> models.Storefront:
    db_storefront = models.Storefront(**storefront.model_dump())
    db.add(db_storefront)
    db.commit()
    db.refresh(db_storefront)
    return db_storefront

def get_or_create_storefront(db: Session, name: str, is_default: bool = False) -> models.Storefront:
    """Storefronts come into existence the first time a product is assigned to them."""
    db_storefront = get_storefront_by_name(db, name)
    if db_storefront:
        return db_storefront
    db_storefront = models.Storefront(name=name, is_default=is_default, enabled=True)
    db.add(db_storefront)
    db.flush()
    return db_storefront

