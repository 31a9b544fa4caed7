# =============================================================================
# ReplCraft Python Client -- Logging
# =============================================================================

import logging

logger = logging.getLogger("replcraft")
