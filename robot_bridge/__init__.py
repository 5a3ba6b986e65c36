"""
Robot Bridge - MQTT to WebSocket bridge for remote robot control.

This module runs next to the robot's MQTT broker and:
- Broadcasts battery, status and velocity updates to WebSocket clients
- Publishes joystick commands from clients to the broker
- Serves the control front-end pages
"""

__version__ = "1.0.0"
