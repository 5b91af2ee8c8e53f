import os

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./leasesign.db")
MINIO_ENDPOINT = os.getenv("MINIO_ENDPOINT", "minio:9000")
MINIO_ACCESS_KEY = os.getenv("MINIO_ACCESS_KEY", "minioadmin")
MINIO_SECRET_KEY = os.getenv("MINIO_SECRET_KEY", "minioadmin")
MINIO_BUCKET = os.getenv("MINIO_BUCKET", "leases")
MINIO_SECURE = os.getenv("MINIO_SECURE", "false").lower() in ("1", "true", "yes")
SECRET_KEY = os.getenv("SECRET_KEY", "devsecret")
PDF_BACKEND = os.getenv("PDF_BACKEND", "local")  # local|gotenberg
GOTENBERG_URL = os.getenv("GOTENBERG_URL", "http://gotenberg:3000")
GOTENBERG_TIMEOUT = float(os.getenv("GOTENBERG_TIMEOUT", "30"))
LANDLORD_NAME = os.getenv("LANDLORD_NAME", "Landlord")
WEB_BASE_URL = os.getenv("WEB_BASE_URL", "http://localhost:3000")
SIGN_LINK_TTL_HOURS = int(os.getenv("SIGN_LINK_TTL_HOURS", "72"))
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
