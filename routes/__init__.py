from .health import health_bp
from .reservations import reservations_bp
from .backend import backend_bp
