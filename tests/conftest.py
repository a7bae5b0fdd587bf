import os
import sys

# the check is a standalone script, make it importable without installing
sys.path.insert(0, os.path.join(os.path.dirname(os.path.dirname(os.path.abspath(__file__))), 'mysql'))
