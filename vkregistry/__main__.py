from vkregistry.cli import main

main()
