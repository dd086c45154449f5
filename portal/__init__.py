"""Client portal: customer-facing views over the shared CRM database."""

__version__ = "1.4.0"
