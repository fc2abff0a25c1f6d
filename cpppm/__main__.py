"""python -m cpppm"""

from cpppm.cli import main

main()
