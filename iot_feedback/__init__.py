"""iot-feedback: device telemetry fan-out with a remediation feedback loop."""

__all__ = ["__version__"]

__version__ = "0.1.0"
