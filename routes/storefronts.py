# routes/storefronts.py
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

import schemas
from database import get_db
from crud import storefront as crud_storefront
from services.product_sync import launch_staging_product
from services.storefront_directory import list_storefronts

router = APIRouter(
    prefix="/api/storefronts",
    tags=["Storefronts"],
    responses={404: {"description": "Not found"}},
)

@router.get("", response_model=schemas.StorefrontList)
def get_storefronts(db: Session = Depends(get_db)):
    return {"storefronts": list_storefronts(db)}

@router.post("", response_model=schemas.Storefront)
def add_storefront(storefront: schemas.StorefrontCreate, db: Session = Depends(get_db)):
    if crud_storefront.get_storefront_by_name(db, storefront.name):
        raise HTTPException(status_code=400, detail="A storefront with this name already exists.")
    return crud_storefront.register_storefront(db=db, storefront=storefront)

@router.post("/{storefront_name}/launch/{shopify_id}", response_model=schemas.StorefrontProduct)
def launch_product(storefront_name: str, shopify_id: int, body: schemas.LaunchRequest,
                   db: Session = Depends(get_db)):
    """Projects a staging product into the storefront, or rebuilds an existing copy."""
    product = launch_staging_product(db, shopify_id, storefront_name, body.category_ids)
    if product is None:
        raise HTTPException(status_code=404, detail="Staging product not found")
    return product
