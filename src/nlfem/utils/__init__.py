"""Small helpers shared by the solver front end."""

from nlfem.utils.run_info import print_material_summary, print_run_header

__all__ = ["print_material_summary", "print_run_header"]
