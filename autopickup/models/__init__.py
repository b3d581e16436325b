# autopickup/models/__init__.py
# Import all models here so SQLAlchemy registers them into Base.metadata.

from autopickup.models.user import User  # noqa: F401
from autopickup.models.product import Product  # noqa: F401

from autopickup.models.pickup_code import PickupCode  # noqa: F401
from autopickup.models.pickup_record import PickupRecord  # noqa: F401

from autopickup.models.order import Order  # noqa: F401
