"""Test harness setup."""

import os

# Use litellm's bundled model cost map instead of fetching it over the network
# at import time; the background fetch can deadlock imports during collection.
os.environ.setdefault("LITELLM_LOCAL_MODEL_COST_MAP", "True")
