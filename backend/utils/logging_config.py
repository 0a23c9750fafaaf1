import logging.config
import sys

def build_logging_config(fmt='json', level='INFO'):
    return {
        'version': 1,
        'disable_existing_loggers': False,
        
        'formatters': {
            'json': {
                '()': 'pythonjsonlogger.json.JsonFormatter',
                'format': '%(asctime)s %(levelname)s %(name)s %(message)s',
                'json_ensure_ascii': False,
            },
            'console': {
                'format': '%(asctime)s - %(name)s - %(levelname)s - %(message)s',
                'datefmt': '%Y-%m-%d %H:%M:%S',
            },
        },
        
        'handlers': {
            'console': {
                'class': 'logging.StreamHandler',
                'formatter': 'json' if fmt == 'json' else 'console',
                'stream': sys.stdout,
            },
        },
        
        'loggers': {
            'backend': {
                'handlers': ['console'],
                'level': level,
                'propagate': False,
            },
        },
        
        'root': {
            'handlers': ['console'],
            'level': 'WARNING',
        },
    }

def configure_logging(fmt='json', level='INFO'):
    """
    Configure logging for the application.
    
    Args:
        fmt (str): 'json' for python-json-logger output, anything else for plain lines.
        level (str): level of the application loggers.
    """
    logging.config.dictConfig(build_logging_config(fmt, level))
    return logging.getLogger('backend')
