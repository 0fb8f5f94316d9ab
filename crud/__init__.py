# crud/__init__.py
from services import variant_locator  # noqa: F401  registers the variant index flush hook
