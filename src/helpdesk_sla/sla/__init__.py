"""
SLA Module
==========

Bounded context for service level agreement resolution, business-hours
deadline computation and breach notification.

Responsibilities:
- Resolve the effective SLA from the ticket/customer/category/CMDB/default
  override layers
- Compute response and resolve deadlines in business time
- Scan open tickets on a schedule and record each threshold crossing once
- Serve the notification log to delivery collaborators
"""

__version__ = "1.0.0"
