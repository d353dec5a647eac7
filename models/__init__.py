from .db import db
from .user import User
from .audit_log import AuditLog
from .session import Session
from .facility import Facility
from .reservation_setting import ReservationSetting
from .seat import Seat
from .reservation import Reservation
from .thread_message import ThreadMessage
from .notification import Notification
