"""
Run the API server: ``python -m receiptsplit`` or ``receiptsplit``.
"""
import uvicorn

from receiptsplit.config import settings


def main():
    uvicorn.run(
        "receiptsplit.main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.DEBUG,
    )


if __name__ == "__main__":
    main()
