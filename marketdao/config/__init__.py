"""
MarketDAO configuration.

    from marketdao.config import load_config
    config = load_config()             # marketdao.toml + MARKETDAO_* env
    config.support_threshold_bp        # 2000
"""

from .loader import DAOConfig, ParameterType, load_config

__all__ = ["DAOConfig", "ParameterType", "load_config"]
