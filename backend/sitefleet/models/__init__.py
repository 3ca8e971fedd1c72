# Import models here so Alembic can discover metadata.
from sitefleet.models.user import User  # noqa: F401

# Primary instance: provisioned sites + their job queue
from sitefleet.models.provisioned_site import ProvisionedSite  # noqa: F401
from sitefleet.models.provisioning_job import ProvisioningJob  # noqa: F401

# Tenant instance
from sitefleet.models.media import Media  # noqa: F401
