"""
Service context extraction for distributed logging.

Every process owns its own local subscription registry, so log lines carry the
service name, deploy environment and pid to tell processes apart.
"""

import os
from functools import lru_cache


@lru_cache(maxsize=1)
def get_service_context() -> str:
    service_name = os.getenv('SERVICE_NAME', 'fanout')
    deploy_env = os.getenv('DEPLOY_ENV', 'local_dev')
    return f'{service_name}@{deploy_env}:{os.getpid()}'
