__version__ = "1.0.0"
CODENAME = "Cold Open"
