"""Receipt rendering and WhatsApp delivery."""
