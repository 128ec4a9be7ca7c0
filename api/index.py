from mangum import Mangum

from channel_points.api import create_app
from channel_points.config import get_settings

settings = get_settings()
app = create_app(settings=settings.model_copy(update={"root_path": settings.root_path or "/api"}))

handler = Mangum(app)
