"""Polygenic risk scores from GWAS summary statistics with LDpred2."""

import logging
from importlib.metadata import version

# Package name and version
package_name = "bigPRS"
__version__ = version(package_name)

# Set up logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("bigPRS")
logger.propagate = False
