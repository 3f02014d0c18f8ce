"""
Shared helper functions and utilities.

Logging setup and configuration loading/saving/validation.
"""

import copy
import json
import logging
import os


def setup_logging(level=logging.INFO):
    """Set up logging configuration.

    Args:
        level: Logging level (default: INFO)
    """
    logging.basicConfig(
        level=level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )
    logger = logging.getLogger(__name__)
    logger.debug("Logging initialized")


DEFAULT_CONFIG = {
    # Marker detection
    'detector': {
        'adaptive_kernel_size': 2,
        'adaptive_delta': 7,
        'min_size_fraction': 0.20,  # of image width, in contour points
        'epsilon_fraction': 0.05,  # of contour points
        'min_edge_length': 10,  # pixels
        'min_distance': 10,  # pixels, duplicate candidate suppression
        'warp_size': 49,
        'color_order': 'rgb',  # 'rgb' or 'bgr'
    },

    # Pose estimation
    'posit': {
        'model_size': 35.0,  # marker side, in the unit translations are reported in
        'focal_length': None,  # pixels; None = image width
        'max_iterations': 100,
        'convergence_delta': 0.01,
    },
}


def get_config(config_path=None):
    """Load configuration from file or return defaults.

    Sections present in the file are merged key by key into the defaults.

    Args:
        config_path: Path to JSON configuration file (optional)

    Returns:
        dict: Configuration dictionary
    """
    config = copy.deepcopy(DEFAULT_CONFIG)

    if config_path and os.path.exists(config_path):
        try:
            with open(config_path, 'r') as f:
                loaded_config = json.load(f)
        except (OSError, ValueError) as e:
            logging.warning(f"Failed to load config from {config_path}: {e}")
            return config

        if not isinstance(loaded_config, dict):
            logging.warning(f"Config file {config_path} does not hold a JSON object, using defaults")
            return config

        for key, value in loaded_config.items():
            if isinstance(value, dict) and isinstance(config.get(key), dict):
                config[key].update(value)
            else:
                config[key] = value
        logging.info(f"Configuration loaded from {config_path}")
    elif config_path:
        logging.warning(f"Config file not found: {config_path}, using defaults")

    return config


def save_config(config, config_path):
    """Save configuration to file.

    Args:
        config: Configuration dictionary
        config_path: Path to save configuration file

    Returns:
        bool: True if save successful, False otherwise
    """
    try:
        with open(config_path, 'w') as f:
            json.dump(config, f, indent=4)
        logging.info(f"Configuration saved to {config_path}")
        return True
    except (OSError, TypeError) as e:
        logging.error(f"Failed to save config to {config_path}: {e}")
        return False


def _is_number(value):
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def validate_config(config):
    """Validate configuration parameters.

    Args:
        config: Configuration dictionary

    Returns:
        bool: True if valid, False otherwise
    """
    for section in ('detector', 'posit'):
        if not isinstance(config.get(section), dict):
            logging.error(f"Missing required config section: {section}")
            return False

    detector = config['detector']
    kernel = detector.get('adaptive_kernel_size', 2)
    if not isinstance(kernel, int) or not 0 <= kernel <= 15:
        logging.error("adaptive_kernel_size must be an integer in [0, 15]")
        return False

    warp_size = detector.get('warp_size', 49)
    if not _is_number(warp_size) or warp_size < 7:
        logging.error("warp_size must be at least 7")
        return False

    if detector.get('color_order', 'rgb') not in ('rgb', 'bgr'):
        logging.error("color_order must be 'rgb' or 'bgr'")
        return False

    posit = config['posit']
    model_size = posit.get('model_size')
    if not _is_number(model_size) or model_size <= 0:
        logging.error("Marker model size must be positive")
        return False

    focal_length = posit.get('focal_length')
    if focal_length is not None and (not _is_number(focal_length) or focal_length <= 0):
        logging.error("Focal length must be positive")
        return False

    max_iterations = posit.get('max_iterations', 100)
    if not _is_number(max_iterations) or max_iterations < 0:
        logging.error("max_iterations must not be negative")
        return False

    logging.info("Configuration validated successfully")
    return True
