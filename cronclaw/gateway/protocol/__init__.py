"""Gateway request protocol"""
from .validators import PARAM_VALIDATORS, validate_method_params

__all__ = ["PARAM_VALIDATORS", "validate_method_params"]
