import logging

# Shared logger for the whole package; configured by setup_logging()
logger = logging.getLogger("docker_log_shipper")
