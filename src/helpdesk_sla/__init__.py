"""
Helpdesk SLA Engine
===================

SLA resolution, business-hours deadline computation and breach notification
for a multi-tenant helpdesk.
"""

__version__ = "1.0.0"
