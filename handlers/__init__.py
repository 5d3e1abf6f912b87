from handlers.common_handlers import router as common_router
from handlers.support_handlers import router as support_router
from handlers.user_handlers import router as user_router

__all__ = ["common_router", "support_router", "user_router"]
