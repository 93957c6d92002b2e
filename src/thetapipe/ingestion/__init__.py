# SPDX-License-Identifier: Apache-2.0
"""ThetaPipe historical ingestion: REST transport and history orchestration."""
