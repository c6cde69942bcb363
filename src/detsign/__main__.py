from detsign.cli import main

raise SystemExit(main())
