from app.core.app_factory import create_app

app = create_app()


if __name__ == "__main__":
    import uvicorn

    # Single worker: the in-memory store is per process
    uvicorn.run("app.main:app", host="0.0.0.0", port=8000, workers=1)
