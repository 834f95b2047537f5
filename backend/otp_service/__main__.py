import uvicorn

from otp_service.core.config import settings


def main() -> None:
    uvicorn.run("otp_service.main:app", host="0.0.0.0", port=settings.PORT)


if __name__ == "__main__":
    main()
