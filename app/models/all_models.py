# Import all models so Base.metadata.create_all() can see them.

from app.models.user import User  # noqa: F401
from app.models.admin import Admin  # noqa: F401
from app.models.points import PointsLedger  # noqa: F401
from app.models.mining import MiningPlanTransaction  # noqa: F401
