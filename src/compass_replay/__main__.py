from compass_replay.cli import main

main()
