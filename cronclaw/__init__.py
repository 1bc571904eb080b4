"""cronclaw - cron job scheduler for agent gateways"""

__version__ = "0.1.0"
