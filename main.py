import uvicorn

from teamflow import config
from teamflow.app import create_app

config.configure_logging()

app = create_app()

# If run standalone
if __name__ == "__main__":
    uvicorn.run(app, host="0.0.0.0", port=config.PORT)
