"""State layer.

The registry is the single source of truth for receivers, beacons and
detections; the policy and presence modules interpret it in time.
"""
