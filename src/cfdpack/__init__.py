# Copyright 2025 Allard Peper (Dragon Ace / DragonAceNL)
# Licensed under the Apache License, Version 2.0 (see LICENSE).
# This file is part of cfdpack.

"""cfdpack - Legacy VTK to .c4a container conversion pipeline."""

__version__ = "0.1.0"
