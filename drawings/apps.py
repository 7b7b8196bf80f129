import logging

from django.apps import AppConfig
from django.db import OperationalError, ProgrammingError
from django.db.backends.signals import connection_created

logger = logging.getLogger(__name__)

RECOVERY_UID = "drawings.recover_training_jobs"


def recover_training_jobs(sender, connection, **kwargs) -> None:
    """first database connection of the process: fail jobs a dead worker left running"""
    connection_created.disconnect(dispatch_uid=RECOVERY_UID)

    from .job_runner import job_runner

    try:
        job_runner.recover_interrupted()
    except (OperationalError, ProgrammingError):
        # before the first migrate there is no job table yet
        logger.debug("training job table not available, skipping recovery")


class DrawingsConfig(AppConfig):
    default_auto_field = "django.db.models.BigAutoField"
    name = "drawings"
    verbose_name = "Drawings"

    def ready(self) -> None:
        connection_created.connect(recover_training_jobs, dispatch_uid=RECOVERY_UID)
