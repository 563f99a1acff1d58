# Copyright 2026 Sitesync project contributors.
# Licensed under the Apache License, Version 2.0 (see LICENSE).
