from cpcp.cli import main


raise SystemExit(main())
