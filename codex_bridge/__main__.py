from codex_bridge.app import main

main()
