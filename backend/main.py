import os

import uvicorn

if __name__ == "__main__":
    # Auto reload only when asked for
    is_dev = os.getenv("RELOAD", "false").lower() == "true"

    uvicorn.run(
        "clinicpos.main:app",
        host=os.getenv("HOST", "127.0.0.1"),
        port=int(os.getenv("PORT", "8000")),
        reload=is_dev,
        log_level="info"
    )
