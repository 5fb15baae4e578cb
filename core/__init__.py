"""Core module - system-neutral models, mapping, settings and errors.

This module contains the invoice and customer models, the field mappers,
integration settings and the error taxonomy. It knows nothing about HTTP,
Temporal or a particular billing component.

System-specific logic (D365, billing components) belongs in /connectors/.
"""

__version__ = "1.0.0"
