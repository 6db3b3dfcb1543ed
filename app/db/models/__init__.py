from .common import *  # noqa
from .production import *  # noqa
from .security_audit import *  # noqa

# Platform event tables (transactional outbox)
from app.events.outbox import *  # noqa
