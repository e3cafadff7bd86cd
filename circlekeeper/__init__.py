"""CircleKeeper - relationship maintenance engine.

Sorts contacts into four engagement circles, keeps each circle near its
target size, and builds a short weekly list of people worth a look.
"""

__version__ = "0.1.0"
