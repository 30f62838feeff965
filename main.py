import uvicorn

from gymaccess.main import app  # noqa: F401
from gymaccess.core.config import get_settings

if __name__ == "__main__":
    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=get_settings().DEBUG_MODE)
