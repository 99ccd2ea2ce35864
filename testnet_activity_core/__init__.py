# testnet_activity_core/__init__.py

# This file makes the directory a Python package.
# Scenarios import directly from the modules, e.g.:
# from testnet_activity_core.submitter import TransactionSubmitter
# from testnet_activity_core.scheduler import ActionScheduler
