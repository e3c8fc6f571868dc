import os

from dotenv import load_dotenv

# Early environment loading BEFORE importing the app package
here = os.path.dirname(os.path.abspath(__file__))
load_dotenv(os.path.join(here, ".env"), override=False)

from app_builder.api import create_app  # noqa: E402


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=int(os.getenv("PORT", "8081")))
