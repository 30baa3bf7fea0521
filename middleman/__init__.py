"""ECoS Middleman - protocol gateway between a layout controller and an ECoS station.

Feedback reported by an HSI-88 style hardware bus is presented to the
controller as if it came from the station's own S88 modules, while every
other frame is relayed transparently.
"""

__version__ = "0.4.0"
