import logging
import os

__author__ = "The eddp developers"
__date__ = "2023-03-02"

ll = os.environ.get('EDDP_LOG_LEVEL', 'INFO')

logging.basicConfig(level=getattr(logging, ll.upper(), logging.INFO),
                    format='%(name)-12s: %(levelname)-8s %(message)s')
logger = logging.getLogger(__name__)
