#!/usr/bin/env python3
"""DevSec - Device Security Assessment Engine. Entry point wrapper."""
from devsec.main import main

if __name__ == '__main__':
    main()
