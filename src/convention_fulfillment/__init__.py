"""Convention payment fulfillment service.

Bookings are validated and priced, paid through a hosted checkout, confirmed
by the gateway webhook, and fulfilled with QR check-in codes and a PDF
receipt pushed over WhatsApp.
"""

__version__ = "0.1.0"
