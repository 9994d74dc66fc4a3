from backend.src.main import health_check, prometheus_metrics
from backend.src.shared.config import Settings
from backend.src.webhook_ca.api.internal import get_status, put_webhook_configuration, rotate_ca
from backend.src.webhook_ca.ca.authority import CertificateAuthority
from backend.src.webhook_ca.controller import LoopStatus
from backend.src.webhook_ca.domain.orm import SecretRow, WebhookConfigurationRow
from backend.src.webhook_ca.metrics import ca_expiry_gauge

# Pydantic Settings
Settings.model_config
Settings.APP_ENV

# ORM columns (written by SQLAlchemy and alembic)
SecretRow.created_at
SecretRow.updated_at
WebhookConfigurationRow.created_at
WebhookConfigurationRow.updated_at

# Domain (read by the API, logs and tests)
CertificateAuthority.private_key_bytes
LoopStatus.rotation_pending

# Observable instruments are polled by the meter provider
ca_expiry_gauge

# FastAPI
health_check
prometheus_metrics
get_status
rotate_ca
put_webhook_configuration
